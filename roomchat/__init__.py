# roomchat — single-room realtime chat server

__version__ = "1.0.0"
