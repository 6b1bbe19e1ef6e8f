"""
Service-layer exceptions mapped to HTTP status codes by app.py.

Plain ValueError still means bad input (400); ValidationError exists so
services can be explicit about it.
"""


class ServiceError(Exception):
    status_code = 500


class ValidationError(ServiceError, ValueError):
    status_code = 400


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409
