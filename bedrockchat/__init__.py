"""
bedrockchat — conversation orchestration core for a Bedrock chat client.
Keeps per-conversation history, routes each send to the right model family,
and folds streamed chunks back into the message log.
"""
