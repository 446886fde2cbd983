#!/usr/bin/env python3
"""
Cold Room Chat Server

Real-time group and private chat over WebSocket, with a JSON snapshot on
disk.
"""

import asyncio
import logging
import sys

from .channels import ChannelHub
from .config import ServerConfig
from .persistence import Persister, SnapshotStore
from .session import SessionHandler
from .state import AppState
from .websocket_server import WebSocketServer

logger = logging.getLogger(__name__)


def load_state(config: ServerConfig, store: SnapshotStore) -> AppState:
    """
    Restore state from the snapshot and create the owner and official room
    if they are missing.

    Raises:
        RuntimeError: The owner must be created but no password is configured
    """
    state = AppState.from_snapshot(store.load())
    if state.owner is None and not config.owner_password:
        raise RuntimeError(
            "COLDROOM_OWNER_PASSWORD must be set to create the owner account"
        )
    if state.bootstrap(
        owner_handle=config.owner_handle,
        owner_password=config.owner_password or "",
        owner_display_name=config.owner_display_name,
        official_room_name=config.official_room_name,
    ):
        logger.info(f"Bootstrapped owner '{config.owner_handle}' and official room")
    return state


async def run_server(config: ServerConfig):
    """
    Run the chat server until cancelled.

    Args:
        config: Server configuration
    """
    store = SnapshotStore(config.data_file)
    state = load_state(config, store)
    hub = ChannelHub()
    persister = Persister(state, store)
    handler = SessionHandler(state, hub, persister)
    ws_server = WebSocketServer(
        state, handler, config.host, config.port, config.static_dir
    )

    # Write the bootstrapped state right away
    await persister.flush_now()
    await ws_server.start()
    logger.info(f"Cold Room server listening on http://{config.host}:{config.port}")

    flush_task = asyncio.create_task(persister.periodic_flush(config.flush_interval))
    presence_task = asyncio.create_task(
        presence_sweep(state, handler, config.presence_timeout)
    )

    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        flush_task.cancel()
        presence_task.cancel()
        try:
            await flush_task
        except asyncio.CancelledError:
            pass
        try:
            await presence_task
        except asyncio.CancelledError:
            pass
        await ws_server.stop()
        await persister.flush_now()
        persister.close()
        logger.info("Cold Room server stopped")


async def presence_sweep(state: AppState, handler: SessionHandler, timeout: int):
    """
    Periodic task marking users offline once they stop pinging.

    Runs every timeout / 2 seconds and rebroadcasts the member list of the
    rooms whose online flags changed.

    Args:
        state: Application state
        handler: Session handler used for the rebroadcast
        timeout: Seconds without a ping before a user is pruned
    """
    logger.info("Starting presence sweep task")
    interval = max(timeout / 2, 1)

    while True:
        try:
            await asyncio.sleep(interval)
            pruned = set(state.presence.prune(timeout))
            if not pruned:
                continue
            for room in state.rooms.all_rooms():
                if pruned.intersection(room.members):
                    await handler.broadcast_users_list(room.room_id)
        except asyncio.CancelledError:
            logger.info("Presence sweep task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in presence sweep: {e}")


def main():
    """Main entry point for the chat server."""
    config = ServerConfig.from_env()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Starting Cold Room chat server...")

    try:
        asyncio.run(run_server(config))
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down Cold Room server...")
        sys.exit(0)


if __name__ == "__main__":
    main()
