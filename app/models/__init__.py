from app.models.deploy_log import DeployLog, DeployRunState, DeployTrigger  # noqa: F401
from app.models.project import Project  # noqa: F401
from app.models.project_webhook import ProjectWebhook  # noqa: F401
