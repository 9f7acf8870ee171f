"""Exit-interview engine.

Config resolution, targeting rules, prompt assembly, the turn governor,
provider fallback, stream relay, and insight extraction/persistence.
Orchestrated per request by InterviewService.
"""
