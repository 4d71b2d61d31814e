"""Sample playbooks seeded into an empty definition repository."""

from __future__ import annotations

from playbook.models import Playbook


def sample_playbooks() -> list[Playbook]:
    return [
        Playbook.model_validate({
            "id": "service-restart",
            "name": "Service Restart Playbook",
            "description": "Safely restart an unhealthy service with health verification",
            "author": "sre-agent",
            "approvalRequired": True,
            "maxExecutionTimeSeconds": 300,
            "tags": ["restart", "remediation"],
            "triggers": [{"type": "service_unhealthy", "service": "*"}],
            "steps": [
                {"order": 1, "name": "Check current health", "tool": "health_check",
                 "parameters": {"url": "${service_url}"}, "onFailure": "continue"},
                {"order": 2, "name": "Collect pre-restart logs", "tool": "log_search",
                 "parameters": {"service": "${service_name}", "level": "ERROR", "limit": 50},
                 "onFailure": "continue"},
                {"order": 3, "name": "Restart service", "tool": "service_restart",
                 "parameters": {"service_type": "${service_type}", "service_name": "${service_name}"},
                 "onFailure": "abort"},
                {"order": 4, "name": "Wait and verify health", "tool": "health_check",
                 "parameters": {"url": "${service_url}", "timeout_seconds": 30},
                 "onFailure": "retry", "maxRetries": 3, "retryDelaySeconds": 10},
            ],
        }),
        Playbook.model_validate({
            "id": "high-cpu-investigation",
            "name": "High CPU Investigation Playbook",
            "description": "Investigate high CPU usage on a service",
            "author": "sre-agent",
            "maxExecutionTimeSeconds": 600,
            "tags": ["cpu", "performance", "investigation"],
            "triggers": [{"type": "incident_severity", "severities": ["HIGH", "CRITICAL"]}],
            "steps": [
                {"order": 1, "name": "Check CPU usage", "tool": "metrics_query",
                 "parameters": {"service": "${service_name}", "metric_name": "cpu_usage"},
                 "onFailure": "continue"},
                {"order": 2, "name": "Check latency", "tool": "metrics_query",
                 "parameters": {"service": "${service_name}", "metric_name": "latency_p99"},
                 "onFailure": "continue"},
                {"order": 3, "name": "Check recent error logs", "tool": "log_search",
                 "parameters": {"service": "${service_name}", "level": "ERROR", "limit": 50},
                 "onFailure": "continue"},
            ],
        }),
        Playbook.model_validate({
            "id": "k8s-crashloop-fix",
            "name": "Kubernetes CrashLoopBackOff Fix",
            "description": "Investigate and fix pods in CrashLoopBackOff state",
            "author": "sre-agent",
            "approvalRequired": True,
            "tags": ["kubernetes", "crashloop", "remediation"],
            "variables": {"namespace": "default"},
            "steps": [
                {"order": 1, "name": "Get pod status", "tool": "kubectl_exec",
                 "parameters": {"command": "get pods", "namespace": "${namespace}"}, "onFailure": "abort"},
                {"order": 2, "name": "Describe failing pod", "tool": "kubectl_exec",
                 "parameters": {"command": "describe pod ${pod_name}", "namespace": "${namespace}"},
                 "onFailure": "continue", "condition": "${pod_name}"},
                {"order": 3, "name": "Check events", "tool": "kubectl_exec",
                 "parameters": {"command": "get events --sort-by=.lastTimestamp", "namespace": "${namespace}"},
                 "onFailure": "continue"},
                {"order": 4, "name": "Rollout restart deployment", "tool": "kubectl_exec",
                 "parameters": {"command": "rollout restart deployment/${deployment_name}",
                                "namespace": "${namespace}"},
                 "onFailure": "abort", "condition": "${deployment_name}"},
            ],
        }),
    ]
