"""Cassandra session for the catalog and progress stores.

Built on cassandra-asyncio-driver, whose sessions add ``aexecute()`` on
top of the regular cassandra-driver API. Startup creates the keyspace and
every catalog and progress table; statements are idempotent
(``IF NOT EXISTS``) so restarts are safe.
"""

import structlog
from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from src.catalog.models import CATALOG_TABLES_CQL
from src.config.settings import Settings, get_settings
from src.progress.models import PROGRESS_TABLES_CQL


logger = structlog.get_logger(__name__)

# Created in this order at startup
SCHEMA: dict[str, list[str]] = {
    "catalog": CATALOG_TABLES_CQL,
    "progress": PROGRESS_TABLES_CQL,
}


class AsyncCassandraConnection:
    """Process-wide cluster and session holder."""

    _cluster: Cluster | None = None
    _session = None

    @classmethod
    def connect(cls):
        """Open the session once; later calls reuse it.

        Raises:
            ConnectionError: If no contact point answers
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()
        auth_provider = (
            PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )
            if settings.cassandra_username and settings.cassandra_password
            else None
        )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            load_balancing_policy=TokenAwarePolicy(
                DCAwareRoundRobinPolicy(local_dc=settings.cassandra_datacenter)
            ),
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            session = cls._cluster.connect()
        except Exception as e:
            logger.error(
                "cassandra_connection_failed",
                hosts=settings.cassandra_hosts,
                error=str(e),
            )
            cls._cluster.shutdown()
            cls._cluster = None
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        session.default_timeout = settings.cassandra_request_timeout
        cls._session = session
        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
        )
        return session

    @classmethod
    def disconnect(cls) -> None:
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("cassandra_disconnected")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._session is not None and not cls._session.is_shutdown


def keyspace_cql(settings: Settings) -> str:
    """CREATE KEYSPACE statement for the configured environment.

    Production uses NetworkTopologyStrategy in the local datacenter; every
    other environment uses SimpleStrategy.
    """
    if settings.is_production:
        replication = (
            f"'class': 'NetworkTopologyStrategy', "
            f"'{settings.cassandra_datacenter}': {settings.cassandra_replication_factor}"
        )
    else:
        replication = (
            f"'class': 'SimpleStrategy', "
            f"'replication_factor': {settings.cassandra_replication_factor}"
        )
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {settings.cassandra_keyspace} "
        f"WITH replication = {{{replication}}} AND durable_writes = true"
    )


async def create_schema(session, keyspace: str) -> None:
    """Create every table group inside ``keyspace``."""
    for group, statements in SCHEMA.items():
        for cql in statements:
            await session.aexecute(cql.format(keyspace=keyspace))
        logger.info("schema_group_ready", keyspace=keyspace, group=group)


async def init_async_cassandra():
    """Connect, then make sure the keyspace and tables exist.

    Returns:
        Session bound to the keyspace, with ``aexecute()`` support
    """
    settings = get_settings()
    session = AsyncCassandraConnection.connect()

    await session.aexecute(keyspace_cql(settings))
    session.set_keyspace(settings.cassandra_keyspace)
    await create_schema(session, settings.cassandra_keyspace)

    logger.info("cassandra_initialized", keyspace=settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    AsyncCassandraConnection.disconnect()
