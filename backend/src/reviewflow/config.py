"""
Configuration module for the review engine and its Lambda handlers.
Loads all environment variables needed by the platform.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    WORKERS_TABLE = os.environ.get('WORKERS_TABLE', '')
    TASKS_TABLE = os.environ.get('TASKS_TABLE', '')
    PROJECT_TASKS_TABLE = os.environ.get('PROJECT_TASKS_TABLE', '')
    REVIEWS_TABLE = os.environ.get('REVIEWS_TABLE', '')
    ACTIVITY_LOG_TABLE = os.environ.get('ACTIVITY_LOG_TABLE', '')
    LOCKS_TABLE = os.environ.get('LOCKS_TABLE', '')

    # SQS Queues
    NOTIFICATIONS_QUEUE_URL = os.environ.get('NOTIFICATIONS_QUEUE_URL', '')

    # Optimistic concurrency: attempts per compare-and-set before giving up
    CAS_MAX_ATTEMPTS = int(os.environ.get('CAS_MAX_ATTEMPTS', '5'))

    # Advisory lock held while a full redistribution runs
    REDISTRIBUTE_LOCK_TTL_SECONDS = int(os.environ.get('REDISTRIBUTE_LOCK_TTL_SECONDS', '60'))
    # How long an availability flip waits for a running redistribution to finish
    REDISTRIBUTE_LOCK_WAIT_SECONDS = float(os.environ.get('REDISTRIBUTE_LOCK_WAIT_SECONDS', '5'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


config = Config()
