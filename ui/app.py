"""Streamlit settings page for the console's storage backend."""

from __future__ import annotations

# --- 路径修复 ---
import sys
import os
# 将项目根目录添加到 sys.path，解决模块导入问题
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
# ----------------

import asyncio
from typing import List, Optional

import streamlit as st

from connectors import network_diagnostics
from core.config_loader import load_config
from core.errors import format_error
from core.events import MigrationLogEntry, MigrationResult, Severity, StorageType
from storage import app_config_store, sqlite_manager
from storage.bootstrap import Console, build_console
from storage.remote_adapter import validate_endpoint
from storage.schema import CAPABILITY_TABLES, REMOTE_TABLE_DDL

_SEVERITY_WRITERS = {
    Severity.INFO: st.write,
    Severity.SUCCESS: st.success,
    Severity.WARNING: st.warning,
    Severity.ERROR: st.error,
}


def _console() -> Console:
    if "console" not in st.session_state:
        st.session_state["console"] = build_console(load_config())
    return st.session_state["console"]


def _show_logs(logs: List[MigrationLogEntry]) -> None:
    for entry in logs:
        _SEVERITY_WRITERS.get(entry.severity, st.write)(entry.message)


def _show_result(result: MigrationResult) -> None:
    if result.success:
        st.success(result.summary)
    else:
        st.error(result.summary)
    with st.expander("详细日志", expanded=not result.success):
        _show_logs(result.logs)


def _backend_panel(console: Console) -> None:
    st.header("存储后端")
    current = console.manager.get_current(force_check=True)
    st.write(f"当前后端: **{current.value}**  ·  网络: {'在线' if console.connectivity.is_online else '离线'}")
    options = {"本地 (SQLite)": StorageType.LOCAL, "远程 (PostgREST)": StorageType.REMOTE}
    labels = list(options.keys())
    choice = st.radio("选择后端", labels, index=labels.index(next(k for k, v in options.items() if v == current)))
    if st.button("切换"):
        target = options[choice]
        switched = asyncio.run(console.manager.try_set_current(target))
        for line in console.manager.last_probe_logs:
            st.write(line)
        if switched:
            st.success(f"已切换到 {target.value}")
        else:
            st.error("远程存储不可用，保持当前后端")
    if st.button("刷新网络状态"):
        online = asyncio.run(console.connectivity.refresh())
        st.info("网络在线" if online else "网络离线，已自动切回本地存储")


def _remote_settings_panel(console: Console) -> None:
    st.header("远程连接")
    remote = console.factory.remote_config()
    st.caption("此处保存的地址和密钥优先于 config.yaml。")
    with st.form("remote_form"):
        url = st.text_input("服务地址", value=remote.url)
        key = st.text_input("API Key", value="", type="password", help="留空则沿用当前密钥")
        submitted = st.form_submit_button("保存")
    if submitted:
        try:
            validate_endpoint(url)
        except ValueError as exc:
            st.error(str(exc))
        else:
            app_config_store.save_remote_override(url, key or remote.api_key, db_path=console.factory.db_path)
            st.success("远程连接已保存")
    if st.button("恢复默认配置"):
        if app_config_store.clear_remote_override(db_path=console.factory.db_path):
            st.success("已清除覆盖配置")
        else:
            st.info("没有需要清除的覆盖配置")
    if st.button("测试远程连接"):
        _show_result(asyncio.run(console.migration.test_remote_connection()))


def _progress_callback(bar, status):
    def _update(percent: int, message: str) -> None:
        bar.progress(max(0, min(100, percent)))
        status.write(message)

    return _update


def _migration_panel(console: Console) -> None:
    st.header("数据迁移")
    st.write("本地集合概览：")
    st.dataframe(
        [
            {"collection": name, "records": len(sqlite_manager.fetch_documents(name, db_path=console.factory.db_path))}
            for name in console.migration.collections
        ]
    )
    skip_existing = st.checkbox("跳过远程已存在的同名记录", value=True)
    cols = st.columns(3)
    with cols[0]:
        if st.button("开始迁移"):
            bar, status = st.progress(0), st.empty()
            result = asyncio.run(
                console.migration.migrate_all(_progress_callback(bar, status), skip_existing=skip_existing)
            )
            _show_result(result)
            if result.reports:
                st.dataframe(
                    [
                        {
                            "collection": r.collection,
                            "total": r.total,
                            "migrated": r.migrated,
                            "skipped": r.skipped,
                            "failed": r.failed,
                            "error": r.error,
                        }
                        for r in result.reports.values()
                    ]
                )
    with cols[1]:
        if st.button("校验迁移结果"):
            _show_result(asyncio.run(console.migration.validate_migration()))
    with cols[2]:
        if st.button("检查远程表"):
            _show_result(asyncio.run(console.migration.check_remote_status()))


def _danger_zone(console: Console) -> None:
    st.header("危险操作")
    st.caption("以下操作会删除远程数据，无法撤销。")
    confirm = st.checkbox("我已确认要修改远程数据")
    if st.button("清空所有远程表", disabled=not confirm):
        bar, status = st.progress(0), st.empty()
        _show_result(asyncio.run(console.migration.clear_all_remote_tables(_progress_callback(bar, status))))
    table = st.selectbox("重建数据表", options=sorted(REMOTE_TABLE_DDL.keys()))
    if st.button("删除并重建", disabled=not confirm):
        logs: List[MigrationLogEntry] = []
        ok = asyncio.run(console.migration.drop_and_recreate_table(table, logs))
        _show_result(MigrationResult(success=ok, logs=logs, summary=f"{table} 已重建" if ok else f"{table} 重建失败"))
    if table in CAPABILITY_TABLES:
        st.caption("该表由检查远程表操作自动创建。")


def _diagnostics_panel(console: Console) -> Optional[str]:
    st.header("网络诊断")
    host = st.text_input("目标主机或地址", value=console.factory.remote_config().url)
    if st.button("运行诊断"):
        try:
            if host:
                outcome = asyncio.run(network_diagnostics.test_connection(host))
                (st.success if outcome.success else st.error)(outcome.message)
                with st.expander("连接测试日志"):
                    for line in outcome.logs:
                        st.write(line)
            diagnosis = asyncio.run(
                network_diagnostics.diagnose_network_issues(online=console.connectivity.is_online)
            )
        except Exception as exc:  # pragma: no cover - runtime feedback
            st.error(f"诊断失败: {format_error(exc)}")
            return None
        st.json(diagnosis.runtime)
        st.write(f"公网 IP: {diagnosis.public_ip or '未知'}")
        for issue in diagnosis.issues:
            st.warning(issue)
        for recommendation in diagnosis.recommendations:
            st.info(recommendation)
        with st.expander("诊断日志"):
            for line in diagnosis.logs:
                st.write(line)
        return diagnosis.public_ip
    return None


def main() -> None:
    st.set_page_config(page_title="Storage Console", layout="wide")
    console = _console()

    page = st.sidebar.selectbox(
        "功能模块",
        (
            "存储后端",
            "远程连接",
            "数据迁移",
            "危险操作",
            "网络诊断",
        ),
    )
    if st.sidebar.button("重新加载配置"):
        st.session_state.pop("console", None)
        st.rerun()

    if page == "存储后端":
        _backend_panel(console)
    elif page == "远程连接":
        _remote_settings_panel(console)
    elif page == "数据迁移":
        _migration_panel(console)
    elif page == "危险操作":
        _danger_zone(console)
    else:
        _diagnostics_panel(console)


if __name__ == "__main__":
    main()
