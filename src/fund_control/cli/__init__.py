"""Fund Control command-line interface"""
