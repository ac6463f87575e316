"""Alert system module."""
from alerts.errors import (
    AlertPipelineError, DataUnavailable, StoreError, CooldownStoreError,
    ChannelSendError, ChannelTimeoutError,
)
from alerts.evaluator import evaluate, evaluate_all
from alerts.cooldown import CooldownManager
from alerts.dispatcher import NotificationDispatcher
from alerts.rules_manager import RulesManager
from alerts.channels import ConsoleChannel, FileChannel, EmailChannel, WhatsAppChannel, WebhookChannel
