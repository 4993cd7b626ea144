"""
Livecast: one-to-many live video over WebRTC.

A WebSocket signaling relay groups clients into rooms (one streamer, many
viewers) and forwards negotiation messages between them. Media flows peer to
peer; the relay never touches it.
"""
