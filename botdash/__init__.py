"""
Botdash — дашборд для бота рассылок.

Реестр задач рассылки + живой статус (бот, задачи, ключ API) с push в браузер.
"""
