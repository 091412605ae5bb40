"""Page-context runtime: local store, sync engine, push session and controller."""
