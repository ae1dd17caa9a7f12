from backoffice.app.log.model.execution_log import ExecutionLog
