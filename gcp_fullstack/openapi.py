"""OpenAPI document generation for API Gateway.

API Gateway only accepts Swagger 2.0 documents. The generated document:
- Proxies every configured backend and frontend path to its Cloud Run service
- Validates JWTs on upstreams that enable JWT auth
- Answers CORS preflight requests without authentication
"""

import json
import re
from dataclasses import dataclass

from gcp_fullstack.errors import ConfigurationError
from gcp_fullstack.models import APIConfig, APIPath, JWTAuth, Upstream

DEFAULT_CORS_ORIGINS = ["*"]
DEFAULT_CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
DEFAULT_CORS_HEADERS = ["*"]

JWKS_URI_TEMPLATE = "https://www.googleapis.com/service_accounts/v1/metadata/x509/{email}"

PROXY_METHODS = ["get", "post", "put", "patch", "delete"]
PROXY_PARAMETER = {"name": "proxy", "in": "path", "required": True, "type": "string"}


@dataclass(frozen=True)
class CorsPolicy:
    """Resolved CORS settings."""

    allowed_origins: list[str]
    allowed_methods: list[str]
    allowed_headers: list[str]


def resolve_cors(api_config: APIConfig) -> CorsPolicy | None:
    """Apply CORS defaults.

    Unset and empty lists both fall back to the defaults. Returns None when
    CORS is disabled.
    """
    if not api_config.enable_cors:
        return None
    return CorsPolicy(
        allowed_origins=list(api_config.cors_allowed_origins or DEFAULT_CORS_ORIGINS),
        allowed_methods=list(api_config.cors_allowed_methods or DEFAULT_CORS_METHODS),
        allowed_headers=list(api_config.cors_allowed_headers or DEFAULT_CORS_HEADERS),
    )


def jwks_uri_for(email: str) -> str:
    """JWKS endpoint publishing the public keys of a service account."""
    return JWKS_URI_TEMPLATE.format(email=email)


def resolve_jwt_auth(jwt_auth: JWTAuth | None, frontend_email: str | None) -> JWTAuth | None:
    """Fill an empty JWT block from the frontend service account.

    Args:
        jwt_auth: Configured JWT block, or None when auth is off
        frontend_email: Email of the frontend service account

    Returns:
        The JWT settings to enforce, or None when auth is off.

    Raises:
        ConfigurationError: If the block must be derived but the frontend has
            no service account.
    """
    if jwt_auth is None or not jwt_auth.is_derived:
        return jwt_auth
    if not frontend_email:
        raise ConfigurationError(
            "frontend service account is required to derive JWT issuer and JWKS URI",
            field="network.api_gateway.config.backend.jwt_auth",
        )
    return JWTAuth(issuer=frontend_email, jwks_uri=jwks_uri_for(frontend_email))


def _slug(path: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", path).strip("_") or "root"


def _path_templates(api_path: APIPath) -> list[str]:
    """Exact path plus its wildcard sub-path template.

    A remapped path forwards to one fixed upstream address, which cannot
    carry a sub-path, so it only matches the exact path.
    """
    path = api_path.path
    if api_path.target_path != path:
        return [path]
    if path == "/":
        return ["/", "/{proxy=**}"]
    return [path, f"{path}/{{proxy=**}}"]


def _google_backend(service_url: str, api_path: APIPath) -> dict:
    if api_path.target_path == api_path.path:
        return {"address": service_url, "path_translation": "APPEND_PATH_TO_ADDRESS"}
    # Remapped paths forward to a fixed upstream path
    return {
        "address": f"{service_url}{api_path.target_path}",
        "path_translation": "CONSTANT_ADDRESS",
    }


def _preflight_operation(operation_id: str, backend: dict, cors: CorsPolicy, parameters: list) -> dict:
    return {
        "operationId": operation_id,
        "summary": "CORS preflight",
        "parameters": parameters,
        "x-google-backend": backend,
        "security": [],
        "responses": {
            "204": {
                "description": "CORS preflight response",
                "headers": {
                    "Access-Control-Allow-Origin": {
                        "type": "string",
                        "default": ",".join(cors.allowed_origins),
                    },
                    "Access-Control-Allow-Methods": {
                        "type": "string",
                        "default": ",".join(cors.allowed_methods),
                    },
                    "Access-Control-Allow-Headers": {
                        "type": "string",
                        "default": ",".join(cors.allowed_headers),
                    },
                },
            }
        },
    }


def _upstream_paths(
    name: str,
    service_url: str,
    upstream: Upstream,
    methods: list[str],
    security_name: str | None,
    cors: CorsPolicy | None,
) -> dict:
    paths = {}
    for api_path in upstream.api_paths:
        backend = _google_backend(service_url, api_path)
        for template in _path_templates(api_path):
            parameters = [PROXY_PARAMETER] if "{proxy" in template else []
            operation_prefix = f"{name}_{_slug(template)}"
            operations = {}
            for method in methods:
                operation = {
                    "operationId": f"{operation_prefix}_{method}",
                    "parameters": parameters,
                    "x-google-backend": backend,
                    "responses": {"200": {"description": "Successful response"}},
                }
                if security_name:
                    operation["security"] = [{security_name: []}]
                operations[method] = operation
            if cors:
                operations["options"] = _preflight_operation(
                    f"{operation_prefix}_options", backend, cors, parameters
                )
            paths[template] = operations
    return paths


def _security_definition(jwt_auth: JWTAuth) -> dict:
    return {
        "authorizationUrl": "",
        "flow": "implicit",
        "type": "oauth2",
        "x-google-issuer": jwt_auth.issuer,
        "x-google-jwks_uri": jwt_auth.jwks_uri,
    }


def build_openapi_document(
    title: str,
    backend_url: str,
    frontend_url: str,
    api_config: APIConfig,
    backend_jwt: JWTAuth | None = None,
    frontend_jwt: JWTAuth | None = None,
    managed_service: str | None = None,
) -> dict:
    """Build the Swagger 2.0 document routing gateway traffic to Cloud Run.

    Args:
        title: Title of the API
        backend_url: Backend Cloud Run service URL
        frontend_url: Frontend Cloud Run service URL
        api_config: Gateway routes and CORS settings
        backend_jwt: Resolved JWT settings for backend paths
        frontend_jwt: Resolved JWT settings for frontend paths
        managed_service: Managed service name of the API, needed for CORS

    Returns:
        The document as a dictionary.
    """
    cors = resolve_cors(api_config)

    document: dict = {
        "swagger": "2.0",
        "info": {
            "title": title,
            "description": "API Gateway routing to Cloud Run backend and frontend",
            "version": "1.0.0",
        },
        "schemes": ["https"],
        "produces": ["application/json"],
    }
    if cors and managed_service:
        document["x-google-endpoints"] = [{"name": managed_service, "allowCors": True}]

    security_definitions = {}
    if backend_jwt:
        security_definitions["backend_jwt"] = _security_definition(backend_jwt)
    if frontend_jwt:
        security_definitions["frontend_jwt"] = _security_definition(frontend_jwt)
    if security_definitions:
        document["securityDefinitions"] = security_definitions

    paths = _upstream_paths(
        "frontend",
        frontend_url,
        api_config.frontend,
        ["get"],
        "frontend_jwt" if frontend_jwt else None,
        cors,
    )
    # Backend routes win over the frontend catch-all on identical templates
    paths.update(
        _upstream_paths(
            "backend",
            backend_url,
            api_config.backend,
            PROXY_METHODS,
            "backend_jwt" if backend_jwt else None,
            cors,
        )
    )
    document["paths"] = dict(sorted(paths.items()))
    return document


def render_openapi_spec(
    title: str,
    backend_url: str,
    frontend_url: str,
    frontend_email: str | None,
    api_config: APIConfig,
    managed_service: str | None = None,
) -> str:
    """Render the gateway document as JSON, resolving JWT auth first.

    Raises:
        ConfigurationError: If JWT auth must be derived without a frontend identity.
    """
    document = build_openapi_document(
        title,
        backend_url,
        frontend_url,
        api_config,
        backend_jwt=resolve_jwt_auth(api_config.backend.jwt_auth, frontend_email),
        frontend_jwt=resolve_jwt_auth(api_config.frontend.jwt_auth, frontend_email),
        managed_service=managed_service,
    )
    return json.dumps(document, indent=2, sort_keys=True)
