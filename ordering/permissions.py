"""
Staff RBAC for kitchen and waiter endpoints. Applied after auth_required, which
resolves request.user from the DRF token.
"""
from functools import wraps

from django.http import JsonResponse


def is_staff_member(user):
    if not user or not getattr(user, 'is_authenticated', True):
        return False
    if not getattr(user, 'is_active', True):
        return False
    return bool(getattr(user, 'is_staff', False) or getattr(user, 'is_superuser', False))


def staff_required(view_func):
    """Decorator: require an active staff (or superuser) account; 403 otherwise."""
    @wraps(view_func)
    def wrapped(request, *args, **kwargs):
        if not is_staff_member(getattr(request, 'user', None)):
            return JsonResponse({'error': 'Staff access required'}, status=403)
        return view_func(request, *args, **kwargs)
    return wrapped
