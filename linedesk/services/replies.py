"""Fixed texts sent to end users and to the operator."""

MSG_ASK_ORDER = "請提供 5 位數訂單編號，我們會協助您完成取貨流程。"
MSG_ASK_PROOF = "已收到訂單編號 {order_id}，請上傳付款證明圖片（截圖即可）。"
MSG_UPLOAD_PROOF = "請上傳付款證明圖片，若要更換訂單編號請輸入「重來」。"
MSG_COMPLETED = "已收到付款證明，待專人審核後會盡快回覆您，請稍候。"
MSG_GREETING = "您好，歡迎光臨！取貨請先提供 5 位數訂單編號，其他問題也可以直接詢問。"

MSG_SERVICE_BUSY = "目前服務繁忙，請稍後再試。"
MSG_NEEDS_HUMAN = "這個問題需要專人協助，請先提供 5 位數訂單編號，或稍候專人回覆。"
MSG_QUEUED = "目前詢問人數較多，已為您排隊，輪到您時會通知您，請勿重複傳送訊息。"
MSG_FLOODING = "您的訊息過於頻繁，請停止重複傳送。輪到您時我們會主動通知。"
MSG_COOLDOWN = "您傳送訊息過於頻繁，一般問題暫停回覆 5 分鐘；取貨流程不受影響。"
MSG_YOUR_TURN = "輪到您了！請重新傳送您的問題。"

OPERATOR_HANDOFF = "通關\n客戶：{display_name}\nUSER：{user_id}\n訂單：{order_id}\n憑證：{proof_ref}"
OPERATOR_BURST = "客戶 {display_name}（{user_id}）在人工處理期間傳來 {count} 則訊息\n最新：{summary}"
OPERATOR_MANUAL_ON = "已切換為全體人工模式，機器人暫停所有自動回覆。"
OPERATOR_MANUAL_OFF = "已恢復自動回覆。"
OPERATOR_STATUS = "模式：{mode}\n使用者：{records}\n排隊：{queued}\n生成中：{active}/{limit}\n知識庫：{entries} 筆"
OPERATOR_RESET_OK = "已重置 {user_id} 的對話狀態。"
OPERATOR_RESET_MISSING = "找不到使用者 {user_id}。"
OPERATOR_UNKNOWN_COMMAND = "可用指令：#manual、#auto、#status、#reset <userId>"

DEFAULT_DISPLAY_NAME = "客戶"
IMAGE_SUMMARY = "[圖片]"
OTHER_SUMMARY = "[其他訊息]"
