"""
JSON view plumbing: method check, login check, body parsing and the
single place where service exceptions become HTTP status codes.
"""

import json
import logging
from functools import wraps

from django.core.exceptions import ImproperlyConfigured, ObjectDoesNotExist
from django.http import JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.exceptions import ConflictError, PermissionDenied, ValidationError

logger = logging.getLogger(__name__)


def error_response(message, status, **extra):
    return JsonResponse({"error": message, **extra}, status=status)


def _validation_details(exc):
    if hasattr(exc, "error_dict"):
        return exc.message_dict
    return exc.messages


def api_view(methods):
    methods = tuple(m.upper() for m in methods)

    def decorator(view):
        @wraps(view)
        def wrapper(request, *args, **kwargs):
            if request.method not in methods:
                response = error_response("Method not allowed.", 405)
                response["Allow"] = ", ".join(methods)
                return response

            if not request.user.is_authenticated:
                return error_response("Authentication required.", 401)

            try:
                return view(request, *args, **kwargs)
            except ValidationError as exc:
                return error_response(
                    "Invalid request.", 400, details=_validation_details(exc)
                )
            except ConflictError as exc:
                return error_response(exc.message, 409, conflicts=exc.conflicts)
            except ObjectDoesNotExist as exc:
                return error_response(getattr(exc, "message", "Not found."), 404)
            except PermissionDenied as exc:
                return error_response(str(exc) or "Permission denied.", 403)
            except ImproperlyConfigured as exc:
                logger.warning("Rejected configuration change: %s", exc)
                return error_response(str(exc), 400)

        return wrapper

    return decorator


# ============================================================
# REQUEST PARSING
# ============================================================

def json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (TypeError, ValueError):
        raise ValidationError("Request body must be valid JSON.")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def parse_instant(value, field):
    """ISO 8601 string -> aware datetime. None stays None."""
    if value is None:
        return None
    try:
        parsed = parse_datetime(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError({field: "Enter a valid ISO 8601 date and time."})
    if timezone.is_naive(parsed):
        raise ValidationError({field: "Date and time must include a time zone offset."})
    return parsed


def parse_bool(value):
    if value is None:
        return None
    return str(value).lower() in ("1", "true", "yes")
