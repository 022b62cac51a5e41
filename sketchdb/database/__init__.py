"""
数据库结构与初始化脚本
"""
