"""Reticulum link adapter.

Wraps an ``RNS.Link`` in the send/is_open/close capability the relay core
expects.
"""

from __future__ import annotations

import logging

import RNS


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"


class LinkConnection:
    def __init__(
        self,
        link: RNS.Link,
        *,
        enable_resource_transfer: bool = True,
        max_resource_bytes: int = 256 * 1024,
    ) -> None:
        self.link = link
        self.conn_id = fmt_link_id(link)
        self.enable_resource_transfer = bool(enable_resource_transfer)
        self.max_resource_bytes = int(max_resource_bytes)
        self.log = logging.getLogger("roomrelay.transport")

    def __repr__(self) -> str:
        return f"LinkConnection({self.conn_id})"

    def packet_would_fit(self, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if getattr(self.link, "MDU", None) is not None:
                return len(payload) <= self.link.MDU
            pkt = RNS.Packet(self.link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def send(self, payload: bytes) -> None:
        if self.packet_would_fit(payload):
            RNS.Packet(self.link, payload).send()
            return

        # Presence lists of busy rooms can outgrow a single packet.
        if self.enable_resource_transfer and len(payload) <= self.max_resource_bytes:
            RNS.Resource(payload, self.link, advertise=True, auto_compress=False)
            self.log.debug(
                "Sent frame via resource link_id=%s bytes=%s",
                self.conn_id,
                len(payload),
            )
            return

        self.log.warning(
            "Frame would not fit MTU; dropping link_id=%s bytes=%s",
            self.conn_id,
            len(payload),
        )

    def is_open(self) -> bool:
        return self.link.status == RNS.Link.ACTIVE

    def close(self) -> None:
        self.link.teardown()
