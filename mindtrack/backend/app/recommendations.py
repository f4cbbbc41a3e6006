from __future__ import annotations

from typing import Dict, List

ASSESSMENT_TYPES = ("PHQ-9", "GAD-7", "PSS-10", "Custom")

SEVERITY_DESCRIPTIONS = {
    "minimal": "Minimal symptoms - Continue monitoring",
    "mild": "Mild symptoms - Consider self-help strategies",
    "moderate": "Moderate symptoms - Consider professional help",
    "severe": "Severe symptoms - Seek professional help immediately",
}

RECOMMENDATIONS: Dict[str, Dict[str, List[str]]] = {
    "PHQ-9": {
        "minimal": [
            "Continue monitoring your mood regularly.",
            "Maintain healthy routines and social connections.",
            "Practice stress management techniques.",
        ],
        "mild": [
            "Increase pleasant activities and social contact.",
            "Consider journaling or short walks daily.",
            "Practice mindfulness or meditation.",
            "Consider speaking with a trusted friend or family member.",
        ],
        "moderate": [
            "Schedule enjoyable activities and talk to a trusted person.",
            "Consider speaking with a mental health professional.",
            "Practice cognitive behavioral therapy techniques.",
            "Maintain regular sleep and exercise routines.",
        ],
        "severe": [
            "Seek professional mental health support promptly.",
            "If in crisis, contact emergency services or a crisis line.",
            "Consider a medication evaluation with a psychiatrist.",
            "Create a safety plan with your healthcare provider.",
        ],
    },
    "GAD-7": {
        "minimal": [
            "Continue stress-management habits that work for you.",
            "Practice regular relaxation techniques.",
        ],
        "mild": [
            "Practice brief breathing exercises twice daily.",
            "Limit caffeine and alcohol intake.",
            "Establish regular sleep patterns.",
            "Use worry time scheduling techniques.",
        ],
        "moderate": [
            "Add structured worry time and limit stimulants.",
            "Consider CBT-based self-help or professional guidance.",
            "Practice progressive muscle relaxation.",
            "Consider speaking with a mental health professional.",
        ],
        "severe": [
            "Consult a clinician about tailored anxiety management.",
            "Consider medication options with a psychiatrist.",
            "Use crisis resources if anxiety escalates.",
            "Practice grounding techniques during panic attacks.",
        ],
    },
    "PSS-10": {
        "minimal": [
            "Keep up healthy boundaries and time management.",
            "Continue stress-reduction practices.",
        ],
        "mild": [
            "Use task batching and micro-breaks during the day.",
            "Practice time management techniques.",
            "Maintain work-life balance.",
        ],
        "moderate": [
            "Prioritize tasks and delegate when possible.",
            "Schedule recovery time daily.",
            "Consider stress management counseling.",
            "Practice regular relaxation techniques.",
        ],
        "severe": [
            "Seek workplace or academic support.",
            "Consider professional stress management help.",
            "Evaluate and reduce stressors where possible.",
            "Practice regular self-care activities.",
        ],
    },
}


def recommendations_for(assessment_type: str, severity: str) -> List[str]:
    by_severity = RECOMMENDATIONS.get(assessment_type) or RECOMMENDATIONS["PHQ-9"]
    return list(by_severity.get(severity) or by_severity["mild"])


def severity_description(severity: str) -> str:
    return SEVERITY_DESCRIPTIONS.get(severity, "Unknown severity level")


def percentage_score(score: int, max_score: int) -> int:
    if max_score <= 0:
        return 0
    return int(score * 100 / max_score + 0.5)
