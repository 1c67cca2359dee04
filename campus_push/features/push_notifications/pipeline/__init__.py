"""
Dispatch pipeline for push notifications.

One job tick flows through time_window -> eligibility -> dedup ->
dispatcher -> result_processor.
"""

__all__ = ["time_window", "eligibility", "dedup", "dispatcher", "result_processor"]
