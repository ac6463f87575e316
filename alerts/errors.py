"""Error types raised inside the alert pipeline."""


class AlertPipelineError(Exception):
    """Base class for alert pipeline failures."""


class DataUnavailable(AlertPipelineError):
    """No usable sample for a rule's metric within the lookback window."""

    def __init__(self, message, rule_id=None, entity_id=None, metric=None):
        super().__init__(message)
        self.rule_id = rule_id
        self.entity_id = entity_id
        self.metric = metric


class StoreError(AlertPipelineError):
    """Reading or writing a durable store failed."""


class CooldownStoreError(StoreError):
    """Reading or upserting a cooldown record failed."""


class ChannelSendError(AlertPipelineError):
    """A channel adapter could not deliver a message."""

    def __init__(self, message, channel=None, status_code=None):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code


class ChannelTimeoutError(ChannelSendError):
    """A channel send did not finish within its timeout."""
