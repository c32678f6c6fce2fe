REDIS_CONSULTATION_KEY = "consultation:meta:{room_id}" # room id - consultation record hash
REDIS_CHAT_KEY = "consultation:chat:{room_id}" # room id - list of JSON chat messages
REDIS_TRANSCRIPT_KEY = "consultation:transcript:{room_id}" # room id - list of JSON transcription entries
REDIS_APPOINTMENT_KEY = "consultation:by-appointment:{appointment_id}" # appointment id - room id of its consultation

# **Example `consultation:meta:{room_id}` hash fields**
# - `roomId` = `{room_id}`
# - `appointmentId` = id of the appointment that scheduled the consultation
# - `status` = scheduled | active | ended
# - `createdAt` = ISO timestamp
# - `startTime` / `endTime` = ISO timestamps, set by start/end
# - `duration` = whole minutes between start and end

# **Example `consultation:by-appointment:{appointment_id}` value**
# - the room id of the consultation created for that appointment
