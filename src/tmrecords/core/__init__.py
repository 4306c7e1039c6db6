"""並行制御のユーティリティ"""
