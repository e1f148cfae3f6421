"""
Sidekick runtime core: DynamoDB-backed cache, voice session concurrency
control and process memory monitoring.
"""

__version__ = '1.0.0'
