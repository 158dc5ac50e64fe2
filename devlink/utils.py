"""
Utility functions for devlink.
"""


def truncate_output(output, max_length: int = 1000) -> str:
    """Truncate large outputs for log lines and chat previews."""
    if output is None:
        return ""

    output_str = output if isinstance(output, str) else str(output)

    if len(output_str) > max_length:
        return output_str[:max_length] + f"... (truncated, {len(output_str)} total chars)"
    return output_str
