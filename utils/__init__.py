"""Utility modules for Alert Monitor."""
from utils.logger import setup_logging, SystemLogger
from utils.formatters import format_metric_value, format_timestamp, metric_label, time_ago
from utils.http_client import HTTPClient, APIError
