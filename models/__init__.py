from .database import db
from .user import User
from .feedback import FeedbackType, FeedbackLink, FeedbackSubmission
from .two_factor import TwoFactorCredential
from .recipient import NotificationRecipient
from .setting import EmailSetting, AppSetting

__all__ = ['db', 'User', 'FeedbackType', 'FeedbackLink', 'FeedbackSubmission',
           'TwoFactorCredential', 'NotificationRecipient', 'EmailSetting', 'AppSetting']
