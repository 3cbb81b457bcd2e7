#!/usr/bin/env python3
"""
Example TLS server whose certificate follows the PEM files on disk.

Usage:
    python examples/tls_server.py CHAIN_PEM KEY_PEM [PORT]

Replace the files while the server runs; new connections pick up the new
certificate within the refresh interval, open connections are unaffected.
"""
import logging
import socket
import sys
import threading

from simplepem import Config, RELOADABLE_PROVIDER, get_provider
from simplepem.security import TLSContextService


def handle_client(tls_sock, address):
    with tls_sock:
        tls_sock.sendall(f"hello {address[0]}, negotiated {tls_sock.version()}\n".encode())


def main():
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(2)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    chain_path, key_path = sys.argv[1], sys.argv[2]
    port = int(sys.argv[3]) if len(sys.argv) > 3 else 8443

    config = Config().add_certificate("server", [chain_path, key_path]).with_refresh_interval(5)
    keystore = get_provider(RELOADABLE_PROVIDER, config=config).start()
    server_context = TLSContextService(keystore).create_server_context("server")

    print(f"Serving {keystore.leaf_certificate('server').subject.rfc4514_string()} on port {port}")

    with socket.create_server(("0.0.0.0", port)) as listener:
        try:
            while True:
                conn, address = listener.accept()
                try:
                    tls_sock = server_context.wrap_socket(conn, server_side=True)
                except OSError as e:
                    print(f"Handshake with {address[0]} failed: {e}")
                    conn.close()
                    continue
                threading.Thread(target=handle_client, args=(tls_sock, address), daemon=True).start()
        except KeyboardInterrupt:
            print("Shutting down")
        finally:
            keystore.shutdown()


if __name__ == '__main__':
    main()
