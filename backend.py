import os
import json
import math
import logging
import pandas as pd
from typing import List, Dict, Any, Optional

from config import Settings, load_settings
from fields import COLLECTIONS, DataSet, build_header_mapping, apply_header_mapping
from validation import Finding, ValidationRun, ProgressCallback
from search import SearchResult, run_search
from rules import DataContext, ParsedRule, Rule, RuleBook
from assist import AssistClient, condition_chain, rule_chain
from export import (
    PrioritizationConfig, rules_config, prioritization_config,
    validation_report, project_summary,
)

logger = logging.getLogger(__name__)

EXPORT_FILES = {
    "rules": "rules-config.json",
    "prioritization": "prioritization-config.json",
    "validation": "validation-report.json",
    "summary": "project-summary.json",
}


class DataManager:
    def __init__(self, settings: Optional[Settings] = None, assist_client: Optional[AssistClient] = None):
        self.settings = settings or load_settings()

        if assist_client is not None:
            self.assist = assist_client
        else:
            try:
                self.assist = AssistClient.from_settings(self.settings)
            except Exception as e:
                logger.warning("AI features disabled due to initialization error: %s", e)
                self.assist = None
        if self.assist is None:
            logger.info("External assist not configured; using local heuristics only")

        self.clients: List[Dict[str, Any]] = []
        self.workers: List[Dict[str, Any]] = []
        self.tasks: List[Dict[str, Any]] = []
        self.header_mappings: Dict[str, Dict[str, str]] = {name: {} for name in COLLECTIONS}
        self.rules = RuleBook()
        self.prioritization = PrioritizationConfig()
        self.findings: List[Finding] = []
        self.last_run: Optional[ValidationRun] = None

    # --------- Ingestion ---------
    @staticmethod
    def read_table(path: str) -> pd.DataFrame:
        if path.lower().endswith((".xlsx", ".xls")):
            return pd.read_excel(path)
        return pd.read_csv(path)

    def load_files(self, clients_path, workers_path, tasks_path) -> List[Finding]:
        for collection, path in (("clients", clients_path), ("workers", workers_path), ("tasks", tasks_path)):
            df = self.read_table(path)
            self.load_records(collection, df.to_dict(orient="records"))
            logger.info("Loaded %d %s from %s", len(df), collection, path)
        return self.validate_all()

    def load_records(self, collection: str, records: List[Dict[str, Any]]):
        """Replace one collection wholesale, correcting its headers to the canonical names."""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")
        rows = self._clean_data(records)
        headers = list(rows[0].keys()) if rows else []
        mapping = build_header_mapping(headers, collection)
        renamed = {original: canonical for original, canonical in mapping.items() if original != canonical}
        if renamed:
            logger.info("Header corrections for %s: %s", collection, renamed)
        setattr(self, collection, apply_header_mapping(rows, mapping))
        self.header_mappings[collection] = renamed
        # Findings describe the previous data until the next validation run.
        self.last_run = None

    def update_cell(self, collection: str, row: int, field: str, value: Any) -> List[Finding]:
        """Edit one cell, replacing the collection with an updated copy, and revalidate."""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")
        records = list(getattr(self, collection))
        if not 0 <= row < len(records):
            raise IndexError(f"Row {row} out of range for {collection}")
        updated = dict(records[row])
        updated[field] = value
        records[row] = updated
        setattr(self, collection, records)
        logger.info("Updated %s[%d].%s", collection, row, field)
        return self.validate_all()

    def _clean_data(self, data: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Clean data to ensure JSON serialization compatibility"""
        cleaned_data = []
        for row in data:
            cleaned_row = {}
            for key, value in row.items():
                if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
                    cleaned_row[str(key)] = None
                elif not isinstance(value, (list, dict)) and pd.isna(value):
                    cleaned_row[str(key)] = None
                else:
                    cleaned_row[str(key)] = value
            cleaned_data.append(cleaned_row)
        return cleaned_data

    @property
    def dataset(self) -> DataSet:
        return {"clients": list(self.clients), "workers": list(self.workers), "tasks": list(self.tasks)}

    def has_data(self) -> bool:
        return bool(self.clients or self.workers or self.tasks)

    # --------- Validation ---------
    def validate_all(self, on_progress: Optional[ProgressCallback] = None) -> List[Finding]:
        run = ValidationRun(self.dataset, on_progress)
        self.findings = run.run()
        self.last_run = run
        return self.findings

    # --------- Search ---------
    def search(self, query: str, collection: str) -> SearchResult:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection!r}")
        outcome = condition_chain(self.assist).run(query, collection)
        conditions = outcome.value if outcome.ok else []
        result = run_search(conditions, getattr(self, collection), self.header_mappings.get(collection))
        result.source = outcome.source
        logger.info("Search %r on %s: %d condition(s), %d match(es) via %s",
                    query, collection, len(conditions), len(result.records), outcome.source)
        return result

    # --------- Rules ---------
    def convert_rule(self, sentence: str) -> Optional[ParsedRule]:
        context = DataContext.from_dataset(self.dataset)
        outcome = rule_chain(self.assist, context).run(sentence)
        return outcome.value if outcome.ok else None

    def add_rule_from_nl(self, sentence: str, priority: int = 1, override: bool = False) -> Optional[Rule]:
        parsed = self.convert_rule(sentence)
        if parsed is None:
            return None
        return self.rules.promote(parsed, priority=priority, override=override)

    def create_rule(self, rule_type: str, parameters: Dict[str, Any], name: Optional[str] = None,
                    description: str = "", priority: int = 1) -> Rule:
        return self.rules.create_rule(rule_type, parameters, name=name, description=description, priority=priority)

    def toggle_rule(self, rule_id: str) -> Rule:
        return self.rules.toggle(rule_id)

    def delete_rule(self, rule_id: str) -> Rule:
        return self.rules.delete(rule_id)

    # --------- Prioritization ---------
    def set_priorities(self, weights: Dict[str, Any]):
        self.prioritization.set_weights(weights)

    def apply_preset(self, name: str):
        self.prioritization.apply_preset(name)

    # --------- Export ---------
    def export_payloads(self) -> Dict[str, Dict[str, Any]]:
        if self.last_run is None:
            self.validate_all()
        dataset = self.dataset
        return {
            "rules": rules_config(self.rules),
            "prioritization": prioritization_config(self.prioritization, dataset),
            "validation": validation_report(self.findings, dataset),
            "summary": project_summary(dataset, self.findings, self.rules, self.prioritization),
        }

    def export_all(self, output_dir: Optional[str] = None) -> str:
        output_dir = output_dir or self.settings.export_dir
        os.makedirs(output_dir, exist_ok=True)
        for collection in COLLECTIONS:
            pd.DataFrame(getattr(self, collection)).to_csv(os.path.join(output_dir, f"{collection}.csv"), index=False)
        for key, payload in self.export_payloads().items():
            with open(os.path.join(output_dir, EXPORT_FILES[key]), "w") as f:
                json.dump(payload, f, indent=2)
        logger.info("Exported data and configuration to %s", output_dir)
        return output_dir
