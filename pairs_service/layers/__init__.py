"""
数据流分层架构
  Layer 1 – Acquisition  : K 线拉取与并发汇合
  Layer 2 – Processing   : 日线清洗、过滤与时间对齐
  Layer 3 – Analysis     : 单窗口策略统计与推荐评分
  Layer 4 – Aggregation  : 多窗口聚合
  Layer 5 – Cache        : TTL 结果缓存与批次内拉取去重
"""
