"""
Fleet Spine - mission dispatch and scheduling engine for AMR fleets.

Sits between a warehouse operations front end and an external AMR control
system: missions are reserved in a durable queue, dispatched to robots,
tracked through their lifecycle, optionally chained onto robots that just
finished work, fired from cron/interval/one-time schedules, and rolled up
into per-robot utilization buckets.

Subpackages:
- fleetspine.core: errors, Result envelope, logging, settings, persistence
- fleetspine.queue: mission records and lifecycle state machine
- fleetspine.tracking: mission execution tracker
- fleetspine.chaining: opportunistic job-chaining evaluator
- fleetspine.scheduling: schedule engine with lease-based locking
- fleetspine.analytics: utilization aggregator
- fleetspine.dispatch: dispatcher and AMR gateway contract
"""

__version__ = "0.1.0"
