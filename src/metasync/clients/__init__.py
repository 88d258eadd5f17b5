"""Client wrappers for external services.

Provides async client wrappers for:
- Postgres: metadata database (asyncpg pool)
- Elasticsearch: search index REST API (httpx)
- NATS: JetStream work queues and core pub/sub liveness channel
"""

from metasync.clients.elasticsearch import ElasticsearchClient
from metasync.clients.nats import NatsClient, consumer_name, is_redelivered, reject
from metasync.clients.postgres import PostgresClient

__all__ = [
    "ElasticsearchClient",
    "NatsClient",
    "PostgresClient",
    "consumer_name",
    "is_redelivered",
    "reject",
]
