"""
start_cluster.py
================
Launch a local cluster of auction servers that share state through
**Raft** (see :mod:`bidhouse.raft_db`) and serve clients over **gRPC**.

Each node is a separate Python subprocess running
``python -m bidhouse.server_grpc`` with its own SQLite file, so the whole
cluster fits on one machine for demos and failover testing.
"""

import argparse
import atexit
import subprocess
import sys
import time

import structlog

from bidhouse.log import configure_logging

logger = structlog.get_logger()

# List to track running processes
running_procs = []


def cleanup():
    """Terminate all node subprocesses before the script exits.

    Registered with :pymod:`atexit`.  Tries ``terminate()`` first and
    falls back to ``kill()`` if a node is still alive after 500 ms.
    """
    for proc in running_procs:
        try:
            proc.terminate()
            time.sleep(0.5)
            if proc.poll() is None:
                proc.kill()
        except OSError:
            pass


atexit.register(cleanup)


def node_command(server_id, num_servers, host, base_port, base_raft_port):
    """Build the command line for node ``server_id``.

    Node *i* serves gRPC on ``base_port + i`` and Raft on
    ``base_raft_port + i``; its peers are every other node's Raft port.
    """
    peers = [f"{host}:{base_raft_port + i}" for i in range(num_servers) if i != server_id]
    return [
        sys.executable, "-m", "bidhouse.server_grpc",
        "--host", host,
        "--port", str(base_port + server_id),
        "--node-id", str(server_id),
        "--raft-port", str(base_raft_port + server_id),
        "--db-path", f"node{server_id}.db",
        "--peers", ",".join(peers),
    ]


def start_server(server_id, num_servers, host='127.0.0.1', base_port=50051, base_raft_port=50100):
    """Spawn one node and return the ``"{host}:{grpc_port}"`` it serves on."""
    cmd = node_command(server_id, num_servers, host, base_port, base_raft_port)
    logger.info("starting_node", node_id=server_id, grpc_port=base_port + server_id,
                raft_port=base_raft_port + server_id)
    proc = subprocess.Popen(cmd)
    running_procs.append(proc)
    return f"{host}:{base_port + server_id}"


def main(argv=None):
    """Launch the cluster and block, reporting nodes that exit."""
    parser = argparse.ArgumentParser(description="Start a cluster of replicated auction servers")
    parser.add_argument("--servers", type=int, default=3, help="Number of servers to start")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind servers to")
    parser.add_argument("--base-port", type=int, default=50051, help="Base port for gRPC servers")
    parser.add_argument("--base-raft-port", type=int, default=50100, help="Base port for Raft consensus")
    args = parser.parse_args(argv)
    configure_logging()

    server_addresses = []
    for i in range(args.servers):
        server_addresses.append(start_server(
            i, args.servers, args.host, args.base_port, args.base_raft_port))
        time.sleep(1)

    logger.info("cluster_started", servers=server_addresses)

    crashed_set = set()
    try:
        while True:
            time.sleep(1)
            for i, proc in enumerate(running_procs):
                if i in crashed_set:
                    continue
                if proc.poll() is not None:
                    logger.warning("node_exited", node_id=i, exit_code=proc.returncode)
                    crashed_set.add(i)
    except KeyboardInterrupt:
        logger.info("cluster_stopping")


if __name__ == "__main__":
    main()
