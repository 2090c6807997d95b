"""TaskHub -- 任务管理后端（REST + 实时任务通知）"""
