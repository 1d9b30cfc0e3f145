"""Background workers using SAQ.

Run one process per queue, e.g.: saq nexus_agent.worker.settings.wake_settings
"""
