# @TASK P4-T4.0 - Remote API package

"""NotiApp remote REST API package.

Sub-modules expose FastAPI routers:
- data: note save, batch sync (dedup by clientId) and listing
- push: Web Push subscriptions, delivery and VAPID key
"""
