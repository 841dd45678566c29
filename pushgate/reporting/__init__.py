from pushgate.reporting.message import (
    DEFAULT_TEMPLATE,
    ERROR_TOKEN,
    FormatterError,
    command_formatter,
    describe_decision,
    identity_formatter,
    load_template,
    render_rejection,
    sanitize_annotation,
)
