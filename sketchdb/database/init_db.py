#!/usr/bin/env python3
"""
数据库初始化脚本
运行此脚本来创建 SketchDB 数据库和表（读取 app_config 中的数据库配置）
"""
import os

import pymysql

from sketchdb.web_app.app_config import get_config


def split_statements(sql_content):
    """去掉注释行后按分号分割SQL语句"""
    lines = [line for line in sql_content.splitlines() if not line.strip().startswith('--')]
    return [stmt.strip() for stmt in '\n'.join(lines).split(';') if stmt.strip()]


def create_database(db_config):
    """创建数据库"""
    server_config = {k: v for k, v in db_config.items() if k != 'database'}
    try:
        connection = pymysql.connect(**server_config)
        with connection.cursor() as cursor:
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS `{db_config['database']}` "
                "DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            print(f"✓ 数据库 '{db_config['database']}' 创建成功")
        connection.commit()
        connection.close()
    except Exception as e:
        print(f"✗ 创建数据库失败: {e}")
        return False

    return True


def execute_sql_file(db_config):
    """执行SQL文件创建表结构"""
    sql_file_path = os.path.join(os.path.dirname(__file__), 'schema.sql')
    with open(sql_file_path, 'r', encoding='utf-8') as file:
        statements = split_statements(file.read())

    try:
        connection = pymysql.connect(**db_config)
        with connection.cursor() as cursor:
            for i, statement in enumerate(statements):
                cursor.execute(statement)
                print(f"✓ 执行SQL语句 {i + 1}/{len(statements)}")
        connection.commit()
        connection.close()
        print("✓ 数据库表结构创建成功")
    except Exception as e:
        print(f"✗ 执行SQL文件失败: {e}")
        return False

    return True


def main():
    """主函数"""
    print("=" * 50)
    print("SketchDB 数据库初始化")
    print("=" * 50)

    db_config = get_config().get_db_config()
    if not create_database(db_config):
        return 1
    if not execute_sql_file(db_config):
        return 1

    print("\n数据库初始化完成！")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
