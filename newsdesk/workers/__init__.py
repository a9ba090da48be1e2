from newsdesk.workers.news_analysis_worker import NewsAnalysisWorker, RunSummary

__all__ = ["NewsAnalysisWorker", "RunSummary"]
