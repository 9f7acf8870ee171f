"""Outbound notifications for completed interviews.

Realtime webhook and Slack delivery with HMAC-SHA256 body signing and a
per-attempt delivery audit log.
"""
