import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "promptchain"
) -> None:
    """Setup structured logging configuration"""
    
    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )
    
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_chain_context,
    ]
    
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_chain_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add chain and session identifiers to all log entries"""
    
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()
    
    bound = structlog.contextvars.get_contextvars()
    for key in ("chain_id", "session_id"):
        if key not in event_dict and bound.get(key):
            event_dict[key] = bound[key]
    
    return event_dict


class ChainLogger:
    """Specialized logger for chain operations"""
    
    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)
        
    def log_chain_event(
        self,
        event_type: str,
        chain_id: str,
        session_id: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log chain lifecycle events"""
        
        self.logger.info(
            "chain_event",
            event_type=event_type,
            chain_id=chain_id,
            session_id=session_id,
            data=data or {},
            **kwargs
        )
        
    def log_step_execution(
        self,
        step_id: str,
        step_type: str,
        chain_id: str,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log step execution events"""
        
        log = self.logger.info if success else self.logger.warning
        log(
            "step_execution",
            step_id=step_id,
            step_type=step_type,
            chain_id=chain_id,
            duration_ms=duration_ms,
            success=success,
            error=error
        )
        
    def log_tool_operation(
        self,
        tool_name: str,
        input_data: Dict[str, Any],
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None,
        fallback: bool = False
    ):
        """Log tool operation events"""
        
        log = self.logger.info if success else self.logger.warning
        log(
            "tool_operation",
            tool_name=tool_name,
            input_data=input_data,
            duration_ms=duration_ms,
            success=success,
            error=error,
            fallback=fallback
        )
        
    def log_context_update(
        self,
        session_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log context updates"""
        
        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )


class MetricsCollector:
    """Collect and export metrics"""
    
    def __init__(self, logger: Optional[ChainLogger] = None):
        self.metrics: Dict[str, Any] = {}
        self.chain_logger = logger or ChainLogger("promptchain.metrics")
        
    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""
        
        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0,
                "min": float('inf'),
                "max": 0
            }
            
        self.metrics[key]["count"] += 1
        self.metrics[key]["sum"] += duration_ms
        self.metrics[key]["min"] = min(self.metrics[key]["min"], duration_ms)
        self.metrics[key]["max"] = max(self.metrics[key]["max"], duration_ms)
        
        self.chain_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )
        
    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""
        
        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value
        
        self.chain_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )
        
    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""
        
        self.metrics[name] = value
        
        self.chain_logger.logger.debug(
            "metric",
            metric_type="gauge",
            name=name,
            value=value,
            tags=tags or {}
        )
        
    def get_counter(self, name: str) -> int:
        value = self.metrics.get(name, 0)
        return value if isinstance(value, int) else 0
        
    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""
        
        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                # Latency metric
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                # Counter or gauge
                summary[key] = value
                
        return summary
        
    def reset(self):
        self.metrics.clear()
