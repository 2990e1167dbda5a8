from .user import User
from .group import Group, GroupMember, MemberRole
from .message import Message, to_message_out
from .message_receipt import MessageReceipt, ReceiptStatus
from .notification import Notification, NotificationOut, NotificationType
from .reaction import Reaction

__all__ = [
    'User',
    'Group',
    'GroupMember',
    'MemberRole',
    'Message',
    'MessageReceipt',
    'ReceiptStatus',
    'Notification',
    'NotificationOut',
    'NotificationType',
    'Reaction',
    'to_message_out',
]
