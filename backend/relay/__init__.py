"""WebRTC signaling relay."""
