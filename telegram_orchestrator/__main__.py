from telegram_orchestrator.orchestrator import main

main()
