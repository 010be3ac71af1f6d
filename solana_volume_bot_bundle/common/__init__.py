# solana_volume_bot_bundle/common/__init__.py
