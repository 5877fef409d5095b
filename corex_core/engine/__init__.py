"""核心引擎与运行时。"""
