"""Real-time turn orchestration between a voice call and a streaming LLM.

The voice provider (Retell) pushes transcript snapshots over a WebSocket and
expects streamed response fragments back. Sessions only talk to the socket
through the Connection protocol in ``bridge.connection``.
"""
