"""
Transactional outbox pipeline.

- ``writer``: records integration events in the aggregate's transaction
- ``queue``: idempotent enqueue of publish jobs
- ``scheduler``: pending sweep, stuck recovery and cleanup tickers
- ``publisher``: claims rows and publishes them to the message bus
- ``parked_events``: inspection and replay of permanently failed rows
"""
