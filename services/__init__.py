from .auth import login_required, two_factor_required, role_required, bearer_required

__all__ = ['login_required', 'two_factor_required', 'role_required', 'bearer_required']
