"""
Pairs-Service 多空策略分析服务
对候选多空组合（做多 A / 做空 B）回放历史日线，评估并排序策略表现

架构分层：
  数据获取层 (Acquisition)  → 从交易所拉取原始 K 线
  处理层     (Processing)   → 清洗、过滤、按时间戳对齐两条序列
  分析层     (Analysis)     → 单窗口策略统计与推荐评分
  聚合层     (Aggregation)  → 多窗口加权汇总、风险等级、共识推荐、APR
  缓存层     (Cache)        → 批量结果 TTL 缓存 + 单次运行内去重
"""

__version__ = "1.0.0"
