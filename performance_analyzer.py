#Performance_Analyzer.py

import pandas as pd
import os
from typing import Any, Dict, Optional
import logging


class PerformanceAnalyzer:
    """
    Analyzes the execution log (executions.csv) written by ExecutionLogger.
    """
    EXECUTION_LOG_FILE = 'executions.csv'
    REQUIRED_COLUMNS = ['timestamp_utc', 'rule_id', 'template_id', 'success', 'duration_ms']

    def __init__(self, log_file: Optional[str] = None):
        self.log_file = log_file or self.EXECUTION_LOG_FILE
        self.executions_df: Optional[pd.DataFrame] = None
        self.logger = logging.getLogger(__name__)

    def load_data(self) -> bool:
        """
        Loads and preprocesses the execution log.
        Returns True on success, False on failure.
        """
        try:
            if not os.path.exists(self.log_file):
                self.logger.warning(f"'{self.log_file}' not found. No data to analyze.")
                return False

            df = pd.read_csv(self.log_file, dtype={'rule_id': str, 'opportunity_id': str, 'cost': str})
            if df.empty:
                self.logger.warning(f"{self.log_file} is empty. No data to analyze.")
                return False

            if not all(col in df.columns for col in self.REQUIRED_COLUMNS):
                self.logger.error(f"{self.log_file} is missing one or more required columns.")
                return False

            df['timestamp_utc'] = pd.to_datetime(df['timestamp_utc'], utc=True)
            df['succeeded'] = df['success'] == 'SUCCESS'
            for col in ('gas_used', 'cost'):
                if col not in df.columns:
                    df[col] = None
            df['gas_used'] = pd.to_numeric(df['gas_used'], errors='coerce')
            df['cost_value'] = pd.to_numeric(
                df['cost'].astype(str).str.replace(r'[$,\s]', '', regex=True), errors='coerce'
            )
            self.executions_df = df.sort_values(by='timestamp_utc')
            return True
        except Exception as e:
            self.logger.error(f"Error loading or processing execution data: {e}", exc_info=True)
            self.executions_df = None
            return False

    def calculate_kpis(self) -> Dict[str, Any]:
        """Key performance indicators over all logged executions."""
        if self.executions_df is None or self.executions_df.empty:
            return {}

        df = self.executions_df
        total = len(df)
        successful = int(df['succeeded'].sum())
        success_rate = (successful / total * 100) if total > 0 else 0

        return {
            "Total Executions": total,
            "Successful Executions": successful,
            "Failed Executions": total - successful,
            "Success Rate (%)": f"{success_rate:.2f}",
            "Avg Duration (ms)": f"{df['duration_ms'].mean():.1f}",
            "Total Gas Used": f"{df['gas_used'].sum():.0f}",
            "Total Cost": f"{df['cost_value'].sum():.6f}",
        }

    def breakdown_by_template(self) -> pd.DataFrame:
        """Per-template execution counts, success rate and mean duration."""
        if self.executions_df is None or self.executions_df.empty:
            return pd.DataFrame(columns=['executions', 'successful', 'success_rate', 'avg_duration_ms'])

        grouped = self.executions_df.groupby('template_id')
        breakdown = pd.DataFrame({
            'executions': grouped.size(),
            'successful': grouped['succeeded'].sum().astype(int),
            'avg_duration_ms': grouped['duration_ms'].mean(),
        })
        breakdown['success_rate'] = breakdown['successful'] / breakdown['executions'] * 100
        return breakdown.sort_values(by='executions', ascending=False)
